"""
UI feedback for the form schema builder.
Toasts for completed actions, import issue lists and error panels.
"""

import streamlit as st
import time
from typing import Optional, List, Dict, Any, Callable
import logging

logger = logging.getLogger(__name__)


def _issue_block(render: Callable[[str], Any], header: str, issues: List[str]) -> None:
    render(header)
    for issue in issues:
        render(f"  • {issue}")


class UserFeedback:
    """Inline feedback blocks."""

    @staticmethod
    def show_validation_results(errors: List[str], warnings: Optional[List[str]] = None):
        """List import errors and warnings, or confirm a clean schema."""
        warnings = warnings or []

        if errors:
            _issue_block(st.error, "❌ **Validation Errors:**", errors)
        if warnings:
            _issue_block(st.warning, "⚠️ **Warnings:**", warnings)
        if not (errors or warnings):
            st.success("✅ **Validation Passed:** No issues found")

    @staticmethod
    def show_error_details(error_info: Dict[str, Any]):
        """
        Show a formatted form builder error.

        Args:
            error_info: Output of format_error_for_display
        """
        message = f"**{error_info['title']}**\n\n{error_info['message']}"
        if error_info.get('severity') == 'warning':
            st.warning(message)
        else:
            st.error(message)

        for violation in error_info.get('violations', []):
            st.markdown(f"- {violation}")

        suggestions = error_info.get('recovery_suggestions', [])
        if suggestions:
            with st.expander("💡 How to fix this"):
                for suggestion in suggestions:
                    st.markdown(f"- {suggestion}")


class Notify:
    """
    Short-lived notifications for completed builder actions.

    Toasts are used when the running Streamlit has them; otherwise the message
    is shown in a placeholder that clears itself after a few seconds.

    Usage:
    Notify.success("Field added")
    Notify.once("Welcome", notification_type="info", key="welcome_once")
    """

    ICONS = {
        'success': '✅',
        'info': 'ℹ️',
        'warning': '⚠️',
        'error': '❌'
    }
    PLACEHOLDER_SECONDS = 3

    @staticmethod
    def _display_notification(message: str, notification_type: str = 'info') -> None:
        icon = Notify.ICONS.get(notification_type, Notify.ICONS['info'])

        if hasattr(st, 'toast'):
            st.toast(message, icon=icon)
            return

        placeholder = st.empty()
        method = notification_type if notification_type in Notify.ICONS else 'info'
        getattr(placeholder, method)(f"{icon} {message}")
        time.sleep(Notify.PLACEHOLDER_SECONDS)
        placeholder.empty()

    @staticmethod
    def success(message: str) -> None:
        Notify._display_notification(message, 'success')

    @staticmethod
    def info(message: str) -> None:
        Notify._display_notification(message, 'info')

    @staticmethod
    def warn(message: str) -> None:
        Notify._display_notification(message, 'warning')

    @staticmethod
    def error(message: str) -> None:
        Notify._display_notification(message, 'error')

    @staticmethod
    def once(message: str, notification_type: str = 'info', key: str = 'default_once') -> bool:
        """Notify the first time ``key`` is seen in this session; True when shown."""
        if st.session_state.get(key):
            return False
        Notify._display_notification(message, notification_type)
        st.session_state[key] = True
        return True
