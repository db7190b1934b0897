"""extrunner - run a browser extension in Firefox or Chromium and keep it live."""

__app_name__ = "extrunner"
__version__ = "0.1.0"
