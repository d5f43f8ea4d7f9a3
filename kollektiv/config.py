import json
import logging
import os
import os.path

import jsonschema

from .core.file_storage import LocalDirectoryStorage
from .core.manifest import GalleryManifestStore, PromptManifestStore, ReferenceCardStore

logger = logging.getLogger(__name__)

package_path = os.path.dirname(__file__)
schema_path = os.path.join(package_path, "config-schema.json")
user_directory = os.path.join(os.path.expanduser("~"), ".kollektiv")

CONFIG_FILENAME = "kollektiv-config.json"
LOG_PREFIX = "[Kollektiv]"

DEFAULT_REFERENCE_SHEETS = {
    "cheatsheet": {"manifest": "cheatsheet.json", "image_root": "cheatsheet"},
    "artstyles": {"manifest": "artstyles_cheatsheet.json", "image_root": "artstyles"},
    "artists": {"manifest": "artists_cheatsheet.json", "image_root": "artists"},
}


class ConfigError(Exception):
    """Raised when the config file exists but cannot be read or parsed"""
    pass


def default_config_path() -> str:
    """Config file location: $KOLLEKTIV_CONFIG, or ~/.kollektiv/kollektiv-config.json."""
    return os.environ.get("KOLLEKTIV_CONFIG") or os.path.join(user_directory, CONFIG_FILENAME)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=f"{LOG_PREFIX} %(levelname)s %(name)s: %(message)s",
    )


class ReferenceSheetConfig:
    name: str
    manifest: str
    image_root: str

    def __init__(self, name: str, manifest: str, image_root: str):
        self.name = name
        self.manifest = manifest
        self.image_root = image_root

    def as_dict(self) -> dict[str, str]:
        return {"manifest": self.manifest, "image_root": self.image_root}


class CatalogConfig:
    root_directory: str
    gallery_root: str
    prompts_root: str
    gallery_manifest: str
    prompts_manifest: str
    reference_sheets: dict[str, ReferenceSheetConfig]
    host: str
    port: int
    log_level: str
    compare_and_swap: bool

    DEFAULTS = {
        "root_directory": os.path.join(user_directory, "data"),
        "gallery_root": "gallery",
        "prompts_root": "prompts",
        "gallery_manifest": "kollektiv_gallery_manifest.json",
        "prompts_manifest": "prompts_manifest.json",
        "reference_sheets": DEFAULT_REFERENCE_SHEETS,
        "host": "127.0.0.1",
        "port": 8765,
        "log_level": "INFO",
        "compare_and_swap": False,
    }

    def __init__(self, config_data: dict | None = None):
        config_data = dict(config_data or {})

        if config_data:
            with open(schema_path, "r") as schema_file:
                validator = jsonschema.Draft7Validator(json.load(schema_file))
            for error in validator.iter_errors(config_data):
                if error.path:
                    offending = error.path[0]
                    logger.error(
                        f"Config value '{offending}' failed to validate against expected schema ({error.message}), using default"
                    )
                    config_data.pop(offending, None)
                else:
                    logger.error(f"Config file failed to validate against expected schema: {error.message}")

        values = dict(self.DEFAULTS)
        values.update({key: value for key, value in config_data.items() if key in self.DEFAULTS})

        self.root_directory = os.path.expanduser(values["root_directory"])
        self.gallery_root = values["gallery_root"]
        self.prompts_root = values["prompts_root"]
        self.gallery_manifest = values["gallery_manifest"]
        self.prompts_manifest = values["prompts_manifest"]
        self.reference_sheets = {
            name: ReferenceSheetConfig(name, sheet["manifest"], sheet["image_root"])
            for name, sheet in values["reference_sheets"].items()
        }
        self.host = values["host"]
        self.port = values["port"]
        self.log_level = values["log_level"].upper()
        self.compare_and_swap = values["compare_and_swap"]

    def as_dict(self) -> dict:
        return {
            "root_directory": self.root_directory,
            "gallery_root": self.gallery_root,
            "prompts_root": self.prompts_root,
            "gallery_manifest": self.gallery_manifest,
            "prompts_manifest": self.prompts_manifest,
            "reference_sheets": {name: sheet.as_dict() for name, sheet in self.reference_sheets.items()},
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level,
            "compare_and_swap": self.compare_and_swap,
        }

    def create_storage(self) -> LocalDirectoryStorage:
        return LocalDirectoryStorage(self.root_directory)

    def gallery_store(self, storage) -> GalleryManifestStore:
        return GalleryManifestStore(storage, self.gallery_manifest)

    def prompt_store(self, storage) -> PromptManifestStore:
        return PromptManifestStore(storage, self.prompts_manifest, prompts_root=self.prompts_root)

    def reference_store(self, storage, sheet_name: str) -> ReferenceCardStore:
        sheet = self.reference_sheets[sheet_name]
        return ReferenceCardStore(storage, sheet.manifest, sheet.image_root)

    def manifest_names(self) -> list[str]:
        names = [self.gallery_manifest, self.prompts_manifest]
        names.extend(sheet.manifest for sheet in self.reference_sheets.values())
        return names

    def known_documents(self, storage) -> dict:
        """Every document this configuration manages, mapped to its default content."""
        documents = {
            self.gallery_manifest: self.gallery_store(storage).default_document(),
            self.prompts_manifest: self.prompt_store(storage).default_document(),
        }
        for name in self.reference_sheets:
            store = self.reference_store(storage, name)
            documents[store.manifest_path] = store.default_document()
        return documents


def load_config(path: str | None = None) -> CatalogConfig:
    """
    Load the config file, falling back to defaults when it does not exist.

    Raises:
        ConfigError: If the file exists but cannot be read or is not valid JSON
    """
    path = path or default_config_path()

    if not os.path.exists(path):
        logger.info(f"{LOG_PREFIX} No existing config found, using defaults (config path: {path})")
        return CatalogConfig()

    try:
        with open(path, "r", encoding="utf-8") as config_file:
            config_data = json.load(config_file)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}")

    if not isinstance(config_data, dict):
        logger.error(f"{LOG_PREFIX} Config file {path} does not contain an object, using defaults")
        return CatalogConfig()

    logger.info(f"{LOG_PREFIX} Loaded config from: {path}")
    return CatalogConfig(config_data)


def save_config(config: CatalogConfig, path: str | None = None) -> str:
    path = path or default_config_path()
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as config_file:
        json.dump(config.as_dict(), config_file, indent=2)
    logger.info(f"{LOG_PREFIX} Saved config to: {path}")
    return path
