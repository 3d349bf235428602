"""
Unit tests for ui_feedback module.
"""

from unittest.mock import patch, MagicMock, call
import pytest

from form_builder.exceptions import OrderMismatchError, SchemaImportError, format_error_for_display
from form_builder.ui_feedback import Notify, UserFeedback


class TestUserFeedback:
    """Test class for inline feedback blocks."""

    @patch('streamlit.success')
    def test_validation_passed(self, mock_success):
        """Test the success message when there are no issues."""
        UserFeedback.show_validation_results([], [])

        mock_success.assert_called_once_with("✅ **Validation Passed:** No issues found")

    @patch('streamlit.warning')
    @patch('streamlit.error')
    def test_validation_errors_and_warnings(self, mock_error, mock_warning):
        """Test errors and warnings are listed under their headers."""
        UserFeedback.show_validation_results(["bad key"], ["rule disabled"])

        assert mock_error.call_args_list == [call("❌ **Validation Errors:**"), call("  • bad key")]
        assert mock_warning.call_args_list == [call("⚠️ **Warnings:**"), call("  • rule disabled")]

    @patch('streamlit.expander')
    @patch('streamlit.markdown')
    @patch('streamlit.error')
    def test_show_error_details_with_violations(self, mock_error, mock_markdown, mock_expander):
        """Test import errors list every violation and the fix suggestions."""
        mock_expander.return_value = MagicMock()
        error_info = format_error_for_display(SchemaImportError(["a: bad", "b: worse"], "upload.yaml"))

        UserFeedback.show_error_details(error_info)

        mock_error.assert_called_once()
        assert "Schema Import Failed" in mock_error.call_args[0][0]
        markdown_lines = [c[0][0] for c in mock_markdown.call_args_list]
        assert markdown_lines[:2] == ["- a: bad", "- b: worse"]
        assert len(markdown_lines) == 2 + len(error_info['recovery_suggestions'])
        mock_expander.assert_called_once_with("💡 How to fix this")

    @patch('streamlit.expander')
    @patch('streamlit.markdown')
    @patch('streamlit.warning')
    def test_show_error_details_warning_severity(self, mock_warning, mock_markdown, mock_expander):
        """Test warning-severity errors use a warning block."""
        mock_expander.return_value = MagicMock()

        UserFeedback.show_error_details({
            'title': '🔍 Field Not Found', 'message': "Field not found: 'x'",
            'severity': 'warning', 'recovery_suggestions': [], 'violations': [],
        })

        mock_warning.assert_called_once_with("**🔍 Field Not Found**\n\nField not found: 'x'")
        mock_expander.assert_not_called()


class TestNotify:
    """Test class for toast notifications."""

    @patch('streamlit.toast')
    def test_toast_with_icon(self, mock_toast):
        """Test each helper maps to its icon."""
        Notify.success("Field added")
        Notify.warn("Careful")
        Notify.error("Failed")

        assert mock_toast.call_args_list == [
            call("Field added", icon='✅'),
            call("Careful", icon='⚠️'),
            call("Failed", icon='❌'),
        ]

    def test_placeholder_fallback_without_toast(self):
        """Test the placeholder fallback when toasts are unavailable."""
        placeholder = MagicMock()
        fake_st = MagicMock(spec=['empty'])
        fake_st.empty.return_value = placeholder

        with patch('form_builder.ui_feedback.st', fake_st), patch('form_builder.ui_feedback.time.sleep') as mock_sleep:
            Notify.info("Saved")

        placeholder.info.assert_called_once_with("ℹ️ Saved")
        mock_sleep.assert_called_once_with(3)
        placeholder.empty.assert_called_once()

    def test_once_per_key(self):
        """Test once() only shows the first time for a key."""
        session_state = {}
        with patch('form_builder.ui_feedback.st') as mock_st:
            mock_st.session_state = session_state

            assert Notify.once("Welcome", key="welcome")
            assert not Notify.once("Welcome", key="welcome")

        mock_st.toast.assert_called_once_with("Welcome", icon='ℹ️')
        assert session_state == {'welcome': True}


class TestErrorFormatting:
    """Test class for error display formatting."""

    def test_order_mismatch_formatting(self):
        error = OrderMismatchError('', ['b'], ['z'], [])

        info = format_error_for_display(error)

        assert info['title'] == '↕️ Invalid Field Order'
        assert info['severity'] == 'error'
        assert "missing ['b']" in info['message']
        assert "unexpected ['z']" in info['message']
        assert info['violations'] == []
