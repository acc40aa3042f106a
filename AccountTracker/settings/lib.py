"""Settings library for application and authentication configurations.

Provides:
    - Schema validation and enforcement for the settings.json structure.
    - Loading, saving, reverting, and managing application settings.
    - The remembered "last used document" and the autosave interval.
"""

import json
import logging
import pathlib
import shutil
from typing import Dict, Any, Optional, List

from PySide6 import QtCore, QtWidgets

from ..status import status

app_name: str = 'AccountTracker'
app_title: str = 'MyAccountTracker'

DEFAULT_AUTOSAVE_INTERVAL: int = 30 * 60  # seconds

METADATA_KEYS: List[str] = [
    'owner',
    'locale',
]

SETTINGS_SCHEMA: Dict[str, Any] = {
    'document': {
        'type': dict,
        'required': True,
        'item_schema': {
            'id': {'type': str, 'required': True},
            'title': {'type': str, 'required': True},
        }
    },
    'autosave': {
        'type': dict,
        'required': True,
        'item_schema': {
            'enabled': {'type': bool, 'required': True},
            'interval': {'type': int, 'required': True, 'minimum': 1},
        }
    },
    'metadata': {
        'type': dict,
        'required': True,
        'required_keys': METADATA_KEYS,
        'item_schema': {
            'owner': {'type': str, 'required': True},
            'locale': {'type': str, 'required': True},
        }
    },
}


def _validate_section(name: str, section: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate a flat settings section against its item schema.

    Args:
        name: Section name, used in error messages.
        section: The section data.
        item_schema: Mapping of field names to type, required and minimum constraints.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a required field is missing or a value is out of range.
    """
    logging.debug(f'Validating "{name}" section.')
    for field, specs in item_schema.items():
        if specs['required'] and field not in section:
            msg = f'Section "{name}" missing "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        if field not in section:
            continue

        value = section[field]
        # bool is a subclass of int; don't let True pass as an interval
        if specs['type'] is int and isinstance(value, bool):
            msg = f'Section "{name}" field "{field}" must be {specs["type"]}, got {type(value)}.'
            logging.error(msg)
            raise TypeError(msg)
        if not isinstance(value, specs['type']):
            msg = f'Section "{name}" field "{field}" must be {specs["type"]}, got {type(value)}.'
            logging.error(msg)
            raise TypeError(msg)
        if 'minimum' in specs and value < specs['minimum']:
            msg = f'Section "{name}" field "{field}" must be at least {specs["minimum"]}, got {value}.'
            logging.error(msg)
            raise ValueError(msg)


class ConfigPaths:
    """Manage application file paths and ensure default templates and directories exist.

    The user data directory comes from Qt's AppDataLocation. Templates shipped with the
    package are copied there on first use.
    """

    def __init__(self) -> None:
        QtWidgets.QApplication.setApplicationName(app_name)
        QtWidgets.QApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
        app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.client_secret_template: pathlib.Path = self.template_dir / 'client_secret.json.template'
        self.settings_template: pathlib.Path = self.template_dir / 'settings.json.template'

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'

        self.client_secret_path: pathlib.Path = self.config_dir / 'client_secret.json'
        self.settings_path: pathlib.Path = self.config_dir / 'settings.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify templates exist and prepare configuration directories and files.

        Raises:
            FileNotFoundError: If a required template is missing.
        """
        logging.debug(f'Verifying required templates in {self.template_dir}')
        for path in (self.template_dir, self.client_secret_template, self.settings_template):
            if not path.exists():
                msg: str = f'Missing template: {path}'
                logging.error(msg)
                raise FileNotFoundError(msg)

        for path in (self.config_dir, self.auth_dir):
            if not path.exists():
                logging.debug(f'Creating directory: {path}')
                path.mkdir(parents=True, exist_ok=True)

        if not self.client_secret_path.exists():
            logging.debug(f'Copying default client_secret from template to {self.client_secret_path}')
            shutil.copy(self.client_secret_template, self.client_secret_path)
        if not self.settings_path.exists():
            logging.debug(f'Copying default settings from template to {self.settings_path}')
            shutil.copy(self.settings_template, self.settings_path)

    def revert_settings_to_template(self) -> None:
        """Restore settings.json from the default template file."""
        logging.debug(f'Reverting settings to template: {self.settings_template}')
        shutil.copy(self.settings_template, self.settings_path)

    def revert_client_secret_to_template(self) -> None:
        """Restore client_secret.json from the default template file."""
        logging.debug(f'Reverting client_secret to template: {self.client_secret_template}')
        shutil.copy(self.client_secret_template, self.client_secret_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save settings.json sections and client_secret.json.
    """
    required_client_secret_keys: List[str] = ['client_id', 'project_id', 'client_secret', 'auth_uri', 'token_uri']

    def __init__(self, settings_path: Optional[str] = None, client_secret_path: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load settings and client_secret data.

        Args:
            settings_path: Optional path to a custom settings.json file.
            client_secret_path: Optional path to a custom client_secret.json file.
        """
        super().__init__()

        if settings_path:
            self.settings_path = pathlib.Path(settings_path)
        if client_secret_path:
            self.client_secret_path = pathlib.Path(client_secret_path)

        self.settings_data: Dict[str, Any] = {k: {} for k in SETTINGS_SCHEMA}
        self.client_secret_data: Dict[str, Any] = {}

        self.init_data()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a metadata value using dictionary-style access.

        Raises:
            KeyError: If key is not in METADATA_KEYS.
        """
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, must be one of {METADATA_KEYS}')
        return self.settings_data['metadata'].get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign a metadata value using dictionary-style access and persist it.

        Raises:
            KeyError: If key is not in METADATA_KEYS.
        """
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, must be one of {METADATA_KEYS}')

        _type = SETTINGS_SCHEMA['metadata']['item_schema'][key]['type']
        if not isinstance(value, _type):
            logging.warning(f'Metadata key "{key}" is not of type {_type}, got {type(value)}.')
            value = _type(value)

        self.settings_data['metadata'][key] = value
        self.save_section('metadata')

        from ..ui.actions import signals
        signals.metadataChanged.emit(key, value)

    def init_data(self) -> None:
        """Reload settings and client_secret data from disk."""
        self.load_settings()
        self.load_client_secret()

    def load_settings(self) -> Dict[str, Any]:
        """Load settings.json from disk and validate against the schema.

        Raises:
            status.SettingsNotFoundException: If the file is missing.
            status.SettingsInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading settings from "{self.settings_path}"')
        if not self.settings_path.exists():
            raise status.SettingsNotFoundException

        try:
            with self.settings_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_settings_data(data)
        except (ValueError, TypeError) as ex:
            raise status.SettingsInvalidException(str(ex)) from ex

        self.settings_data = data
        return self.settings_data

    def load_client_secret(self) -> Dict[str, Any]:
        """Load client_secret.json from disk.

        The file is only validated when an interactive sign-in needs it, so a fresh
        install with the empty template still loads.

        Raises:
            status.ClientSecretNotFoundException: If the file is missing.
            status.ClientSecretInvalidException: If the file is not valid JSON.
        """
        logging.debug(f'Loading client_secret from "{self.client_secret_path}"')
        if not self.client_secret_path.exists():
            raise status.ClientSecretNotFoundException
        try:
            with self.client_secret_path.open('r', encoding='utf-8') as f:
                self.client_secret_data = json.load(f)
        except json.JSONDecodeError as ex:
            raise status.ClientSecretInvalidException from ex
        return self.client_secret_data

    def validate_client_secret(self, data: Optional[Dict[str, Any]] = None) -> str:
        """Validate that the client configuration contains required OAuth credentials.

        Returns:
            str: Section key used ('installed' or 'web').

        Raises:
            status.ClientSecretInvalidException: If no valid section exists or required fields are empty.
        """
        if data is None:
            data = self.client_secret_data

        key = next((k for k in ('installed', 'web') if k in data), None)
        if not key:
            raise status.ClientSecretInvalidException('Missing "installed" or "web" section in client_secret.')

        config_section: Dict[str, Any] = data[key]
        missing: List[str] = [k for k in self.required_client_secret_keys if not config_section.get(k)]
        if missing:
            raise status.ClientSecretInvalidException(
                f'Missing required fields in the \'{key}\' section: {missing}.'
            )
        return key

    def validate_settings_data(self, data: Optional[Dict[str, Any]] = None) -> None:
        """Validate settings data against SETTINGS_SCHEMA.

        Raises:
            ValueError: If a required section or field is missing.
            TypeError: If a section or field has the wrong type.
        """
        if data is None:
            data = self.settings_data

        for section, specs in SETTINGS_SCHEMA.items():
            if specs.get('required') and section not in data:
                msg: str = f'Missing required section: {section}'
                logging.error(msg)
                raise ValueError(msg)
            if not isinstance(data[section], specs['type']):
                msg = f'Section "{section}" must be {specs["type"]}, got {type(data[section])}.'
                logging.error(msg)
                raise TypeError(msg)
            _validate_section(section, data[section], specs['item_schema'])

        logging.debug('Settings data is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a settings or client_secret section.

        Raises:
            KeyError: If section_name is unknown.
        """
        if section_name == 'client_secret':
            return self.client_secret_data.copy()
        return self.settings_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Validate, replace and persist a configuration section.

        Raises:
            ValueError: If section_name is unknown or the data is invalid.
            TypeError: If a field has the wrong type.
        """
        from ..ui.actions import signals

        if section_name == 'client_secret':
            self.validate_client_secret(new_data)
            self.client_secret_data = new_data
            self.save_section(section_name)
            signals.configSectionChanged.emit(section_name)
            return

        if section_name not in SETTINGS_SCHEMA:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        _validate_section(section_name, new_data, SETTINGS_SCHEMA[section_name]['item_schema'])
        self.settings_data[section_name] = new_data
        self.save_section(section_name)
        signals.configSectionChanged.emit(section_name)

    def revert_section(self, section_name: str) -> None:
        """Revert a configuration section to its template default and save it.

        Raises:
            ValueError: If section_name is unknown.
        """
        from ..ui.actions import signals

        if section_name == 'client_secret':
            self.revert_client_secret_to_template()
            self.load_client_secret()
            signals.configSectionChanged.emit(section_name)
            return

        if section_name not in SETTINGS_SCHEMA:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.settings_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)

        self.settings_data[section_name] = template_data[section_name]
        self.save_section(section_name)
        signals.configSectionChanged.emit(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single configuration section to its file.

        Raises:
            ValueError: If section_name is unknown.
        """
        if section_name == 'client_secret':
            logging.debug(f'Saving client_secret to "{self.client_secret_path}"')
            with self.client_secret_path.open('w', encoding='utf-8') as f:
                json.dump(self.client_secret_data, f, indent=4, ensure_ascii=False)
            return

        if section_name not in SETTINGS_SCHEMA:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.settings_path.open('r', encoding='utf-8') as f:
            data: Dict[str, Any] = json.load(f)
        data[section_name] = self.settings_data[section_name]

        with self.settings_path.open('w', encoding='utf-8') as f:
            json.dump(data, f, indent=4, ensure_ascii=False)

    @property
    def last_document_id(self) -> str:
        """The id of the document used last, or an empty string."""
        return self.settings_data['document'].get('id', '')

    def remember_document(self, document_id: str, title: str = '') -> None:
        """Persist the active document so the next session can reopen it."""
        logging.debug(f'Remembering document "{document_id}" ({title})')
        self.set_section('document', {'id': document_id or '', 'title': title or ''})

    def forget_document(self) -> None:
        """Clear the remembered document."""
        self.set_section('document', {'id': '', 'title': ''})

    @property
    def autosave_enabled(self) -> bool:
        return self.settings_data['autosave'].get('enabled', True)

    @property
    def autosave_interval_ms(self) -> int:
        """The autosave debounce interval in milliseconds."""
        seconds = self.settings_data['autosave'].get('interval', DEFAULT_AUTOSAVE_INTERVAL)
        return int(seconds) * 1000


settings: SettingsAPI = SettingsAPI()
