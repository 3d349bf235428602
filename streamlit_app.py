"""
Main Streamlit application for the form schema builder.
Drag-and-drop editor for dynamic form schemas with conditional visibility rules.
"""

import streamlit as st
import logging

from form_builder.config_loader import get_config_summary, get_logging_level, load_config
from form_builder.exceptions import FormBuilderError, format_error_for_display
from form_builder.form_builder_view import FormBuilderView
from form_builder.session_manager import SessionManager
from form_builder.ui_feedback import UserFeedback

# Configure logging dynamically from config
config = load_config()
log_level_str = config.get('logging', {}).get('level', 'INFO')
logging.basicConfig(level=get_logging_level(log_level_str))
logger = logging.getLogger(__name__)
logger.info(f"Logging configured to level: {log_level_str}")
logger.info(f"Starting app version: {config['app']['version']}")

# Page configuration
st.set_page_config(
    page_title=config['ui']['page_title'],
    page_icon="🧩",
    layout="wide",
    initial_sidebar_state="expanded"
)


def render_sidebar():
    """Render sidebar with session controls and configuration summary."""
    with st.sidebar:
        st.title(config['ui'].get('sidebar_title', 'Field Palette'))

        schema_file = st.text_input("Schema file", value=SessionManager.get_schema_file(), key="schema_file_input")
        if schema_file != SessionManager.get_schema_file():
            SessionManager.set_schema_file(schema_file)

        if st.button("🗑️ New schema", key="new_schema", help="Discard the current schema and history"):
            SessionManager.reset_session()
            st.rerun()

        with st.expander("⚙️ Configuration"):
            for name, value in get_config_summary(config).items():
                st.caption(f"{name}: {value}")


def main():
    """Main application entry point."""
    try:
        SessionManager.initialize(config)
        render_sidebar()
        FormBuilderView.render(config)
    except FormBuilderError as e:
        logger.error(f"Unhandled form builder error: {e}", exc_info=True)
        UserFeedback.show_error_details(format_error_for_display(e))


if __name__ == "__main__":
    main()
