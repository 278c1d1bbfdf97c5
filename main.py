"""
This is the main entry point for the HCLog Streamlit application.

This script handles the following key responsibilities:
- Sets the overall page configuration and logging for the Streamlit app.
- Initializes the main `HCLogService`, which manages the loan ledger and its storage.
- Manages the session state to track the logged-in user across reruns.
- Routes the user to the login form or the main application based on their login status.
"""
# hclog/main.py

import logging

import streamlit as st

from hclog import config
from hclog.service import HCLogService
import gui

# Set the basic configuration for the Streamlit page.
st.set_page_config(
    page_title=f"{config.APP_TITLE} - {config.HOSPITAL_NAME}",
    layout="wide"
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Service Initialization
@st.cache_resource
def get_hclog_service():
    """
    Initializes and returns the main HCLogService instance.

    This function is decorated with `@st.cache_resource` so the stored data is
    read only once and the same state survives app reruns.

    Returns:
        HCLogService: The singleton instance of the main application service.
    """
    return HCLogService()

service = get_hclog_service()

# Session State Management
if 'current_user' not in st.session_state:
    st.session_state.current_user = None

# The service acts on behalf of whoever is logged in to this browser session.
service.current_user = st.session_state.current_user

# Main App Router
if st.session_state.current_user:
    gui.show_main_app(service)
else:
    gui.show_login_form(service)
