"""Standard exit codes for extrunner.

This module defines standard exit codes used across the extrunner CLI
for consistent error reporting and scripting support.
"""


class ExitCode:
    """Standard exit codes for extrunner.

    These codes follow common Unix conventions where possible:
    - 0: Success
    - 1: General error
    - 130: Script terminated by Ctrl+C (SIGINT)

    extrunner-specific codes start at 2:
    - 2: Configuration error
    - 3: Invalid manifest
    - 4: Browser error (missing binary, unsupported capability)
    - 5: Protocol error
    - 7: Invalid argument
    """

    # Standard success
    SUCCESS = 0

    # General errors
    GENERAL_ERROR = 1

    # extrunner-specific errors
    CONFIGURATION_ERROR = 2
    INVALID_MANIFEST = 3
    BROWSER_ERROR = 4
    PROTOCOL_ERROR = 5
    INVALID_ARGUMENT = 7

    # Signal-based exits (128 + signal number)
    CANCELLED = 130  # Ctrl+C (SIGINT = 2)

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the name of an exit code.

        Args:
            code: The exit code value

        Returns:
            Human-readable name for the exit code
        """
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.INVALID_MANIFEST: "INVALID_MANIFEST",
            cls.BROWSER_ERROR: "BROWSER_ERROR",
            cls.PROTOCOL_ERROR: "PROTOCOL_ERROR",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")

    @classmethod
    def get_description(cls, code: int) -> str:
        """Get the description of an exit code.

        Args:
            code: The exit code value

        Returns:
            Human-readable description for the exit code
        """
        descriptions = {
            cls.SUCCESS: "Operation completed successfully",
            cls.GENERAL_ERROR: "An unexpected error occurred",
            cls.CONFIGURATION_ERROR: "Configuration error or invalid config file",
            cls.INVALID_MANIFEST: "The extension manifest.json is missing or invalid",
            cls.BROWSER_ERROR: "The browser is missing or lacks a required capability",
            cls.PROTOCOL_ERROR: "A browser remote protocol call failed",
            cls.INVALID_ARGUMENT: "Invalid command-line argument",
            cls.CANCELLED: "Operation cancelled by user",
        }
        return descriptions.get(code, f"Unknown exit code: {code}")
