"""Exit codes used by the olmed-gateway CLI."""


class ExitCode:
    """Exit codes for olmed-gateway commands.

    Unix conventions where they apply (0 success, 1 general error,
    130 interrupted by Ctrl+C). Gateway-specific codes:

    - 2: Configuration error
    - 3: Authentication error
    - 4: Scheduler error
    - 5: Network error
    - 7: Invalid argument
    - 8: Not found
    """

    SUCCESS = 0

    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    AUTHENTICATION_ERROR = 3
    SCHEDULER_ERROR = 4
    NETWORK_ERROR = 5
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8

    # 128 + SIGINT
    CANCELLED = 130

    _NAMES = {
        SUCCESS: "SUCCESS",
        GENERAL_ERROR: "GENERAL_ERROR",
        CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
        AUTHENTICATION_ERROR: "AUTHENTICATION_ERROR",
        SCHEDULER_ERROR: "SCHEDULER_ERROR",
        NETWORK_ERROR: "NETWORK_ERROR",
        INVALID_ARGUMENT: "INVALID_ARGUMENT",
        NOT_FOUND: "NOT_FOUND",
        CANCELLED: "CANCELLED",
    }

    _DESCRIPTIONS = {
        SUCCESS: "Operation completed successfully",
        GENERAL_ERROR: "An unexpected error occurred",
        CONFIGURATION_ERROR: "Configuration error or invalid config file",
        AUTHENTICATION_ERROR: "Olmed API login, refresh or logout failed",
        SCHEDULER_ERROR: "Invalid schedule or scheduler failure",
        NETWORK_ERROR: "Network or connectivity error",
        INVALID_ARGUMENT: "Invalid command-line argument",
        NOT_FOUND: "Requested resource not found",
        CANCELLED: "Operation cancelled by user",
    }

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the symbolic name of an exit code."""
        return cls._NAMES.get(code, f"UNKNOWN({code})")

    @classmethod
    def get_description(cls, code: int) -> str:
        """Get a human-readable description of an exit code."""
        return cls._DESCRIPTIONS.get(code, f"Unknown exit code: {code}")
