"""
Session state management for the form schema builder.
Each browser session owns one schema store with its drag controller and
rule editor, kept in Streamlit session state.
"""

import streamlit as st
from typing import Dict, Any, List, Optional
from datetime import datetime
import logging

from form_builder.blueprints import load_blueprint_catalog
from form_builder.config_loader import get_config_value, get_default_config
from form_builder.drag_controller import DEFAULT_ACTIVATION_DISTANCE, DragController
from form_builder.rule_editor import RuleEditor
from form_builder.schema_store import DEFAULT_MAX_HISTORY_SIZE, SchemaStore

logger = logging.getLogger(__name__)

STORE_KEY = 'schema_store'
CONTROLLER_KEY = 'drag_controller'
RULE_EDITOR_KEY = 'rule_editor'


class SessionManager:
    """Manages Streamlit session state for the form schema builder."""

    @staticmethod
    def initialize(config: Optional[Dict[str, Any]] = None):
        """Create the session's store, controller and rule editor once per session."""
        config = config or get_default_config()

        if STORE_KEY not in st.session_state:
            catalog = load_blueprint_catalog(get_config_value(config, 'builder', 'blueprint_catalog'))
            store = SchemaStore(
                catalog=catalog,
                max_history_size=get_config_value(config, 'builder', 'max_history_size', DEFAULT_MAX_HISTORY_SIZE),
            )
            st.session_state[STORE_KEY] = store
            st.session_state[CONTROLLER_KEY] = DragController(
                store,
                activation_distance=get_config_value(
                    config, 'builder', 'drag_activation_distance', DEFAULT_ACTIVATION_DISTANCE
                ),
            )
            st.session_state[RULE_EDITOR_KEY] = RuleEditor(store)

        defaults = {
            'config': config,
            'schema_file': get_config_value(config, 'builder', 'schema_file', 'schemas/form_schema.yaml'),
            'import_warnings': [],
            'last_error': None,
            'session_id': None,
        }
        for key, default_value in defaults.items():
            if key not in st.session_state:
                st.session_state[key] = default_value

        if not st.session_state.session_id:
            st.session_state.session_id = f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
            logger.info(f"Session initialized: {st.session_state.session_id}")

    @staticmethod
    def get_store() -> SchemaStore:
        return st.session_state[STORE_KEY]

    @staticmethod
    def get_controller() -> DragController:
        return st.session_state[CONTROLLER_KEY]

    @staticmethod
    def get_rule_editor() -> RuleEditor:
        return st.session_state[RULE_EDITOR_KEY]

    @staticmethod
    def get_config() -> Dict[str, Any]:
        return st.session_state.get('config') or get_default_config()

    @staticmethod
    def get_schema_file() -> str:
        return st.session_state.get('schema_file', 'schemas/form_schema.yaml')

    @staticmethod
    def set_schema_file(path: str):
        st.session_state.schema_file = path

    @staticmethod
    def set_import_warnings(warnings: List[str]):
        st.session_state.import_warnings = list(warnings)

    @staticmethod
    def get_import_warnings() -> List[str]:
        return st.session_state.get('import_warnings', [])

    @staticmethod
    def set_last_error(error_info: Optional[Dict[str, Any]]):
        """Remember a formatted error so it survives the next rerun."""
        st.session_state.last_error = error_info

    @staticmethod
    def pop_last_error() -> Optional[Dict[str, Any]]:
        error_info = st.session_state.get('last_error')
        st.session_state.last_error = None
        return error_info

    @staticmethod
    def reset_session():
        """Drop the session's builder state; the next initialize() starts fresh."""
        for key in [STORE_KEY, CONTROLLER_KEY, RULE_EDITOR_KEY, 'import_warnings', 'last_error']:
            if key in st.session_state:
                del st.session_state[key]
        logger.info("Builder session reset")
