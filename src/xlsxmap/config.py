"""Config module to share reader and writer settings across all modules in xlsxmap."""

import logging
import sys
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

# openpyxl reads the Office Open XML formats only (no legacy .xls).
DEFAULT_EXCEL_FILE_ENDINGS = [".xlsx", ".xlsm"]


class ReaderSettings(BaseModel):
    allowed_extensions: list[str] = DEFAULT_EXCEL_FILE_ENDINGS
    header_row: Annotated[int, Field(ge=1)] = 1
    sheet_name: str | None = None
    read_only: bool = True
    # Read the cached result of formula cells instead of the formula text.
    data_only: bool = True

    @field_validator("allowed_extensions", mode="after")
    @classmethod
    def normalize_extensions(cls, value):
        normalized = []
        for ext in value:
            ext = ext.strip().lower()
            if not ext:
                msg = "File extensions must not be empty."
                raise ValueError(msg)
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized


class WriterSettings(BaseModel):
    sheet_name: str | None = None
    # Number of empty rows after the data that are still covered by the
    # column validations.
    validation_rows_pre_allocated: Annotated[int, Field(ge=0)] = 0
    freeze_header: bool = True


class XLSXMapConfig(BaseModel):
    reader: ReaderSettings = ReaderSettings()
    writer: WriterSettings = WriterSettings()
    default_config: bool = False


# These are updated/set by load_config.
SETTINGS = XLSXMapConfig(default_config=True)
SETTINGS_PATH = None


def load_config(
    config_file: Path | None = None, config: XLSXMapConfig | None = None
) -> XLSXMapConfig:
    """Load settings from a toml file, re-validate a given config or reset.

    Without arguments (or with a config file that does not exist) the
    default settings are restored.
    """
    new_conf = {}
    new_conf["SETTINGS_PATH"] = None
    if config_file is not None and not config_file.exists():
        logger.warning('Configuration file "%s" not found.', config_file)
    if (True if config_file is None else not config_file.exists()) and config is None:
        new_conf["SETTINGS"] = XLSXMapConfig(default_config=True)
        logger.debug("Initializing default config.")
    elif config_file and config is None:
        with config_file.open(mode="rb") as fp:
            conf = tomllib.load(fp)
        logger.debug("Config loaded from: %s", config_file)
        new_conf["SETTINGS"] = XLSXMapConfig(**conf)
        new_conf["SETTINGS_PATH"] = config_file.resolve()
    else:
        new_conf["SETTINGS"] = XLSXMapConfig.model_validate_json(
            config.model_dump_json()
        )
        logger.debug("Refreshing global state of config.")

    for name, value in new_conf.items():
        globals()[name] = value
    return new_conf["SETTINGS"]
