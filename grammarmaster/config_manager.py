"""
Configuration manager for GrammarMaster settings.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional


class ConfigManager:
    """Holds validated runtime settings for the catalog, timers, tokens and HTTP server."""

    # Default configuration values
    DEFAULT_QUIZ_DIRECTORY = "./quizzes/"
    DEFAULT_RESULTS_FILE = "./data/quiz_results.json"
    DEFAULT_TICK_INTERVAL = 1.0
    DEFAULT_JWT_SECRET = "your-secret-key"
    DEFAULT_JWT_ALGORITHM = "HS256"
    DEFAULT_TOKEN_EXPIRE_DAYS = 7
    DEFAULT_API_HOST = "0.0.0.0"
    DEFAULT_API_PORT = 8000

    # Validation limits
    MIN_TICK_INTERVAL = 0.01
    MAX_TICK_INTERVAL = 5.0
    MIN_TOKEN_EXPIRE_DAYS = 1
    MAX_TOKEN_EXPIRE_DAYS = 365
    MIN_API_PORT = 1
    MAX_API_PORT = 65535
    SUPPORTED_JWT_ALGORITHMS = ("HS256", "HS384", "HS512")

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self.reset_to_defaults()

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._quiz_directory = self.DEFAULT_QUIZ_DIRECTORY
        self._results_file: Optional[str] = self.DEFAULT_RESULTS_FILE
        self._tick_interval = self.DEFAULT_TICK_INTERVAL
        self._jwt_secret = self.DEFAULT_JWT_SECRET
        self._jwt_algorithm = self.DEFAULT_JWT_ALGORITHM
        self._token_expire_days = self.DEFAULT_TOKEN_EXPIRE_DAYS
        self._api_host = self.DEFAULT_API_HOST
        self._api_port = self.DEFAULT_API_PORT
        self.logger.debug("All settings reset to default values")

    def _failure(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {
            'success': False,
            'error': error_msg,
            'user_message': user_message
        }

    def _success(self, message: str) -> Dict[str, Any]:
        self.logger.info(message)
        return {
            'success': True,
            'message': message,
            'user_message': f"✅ {message}"
        }

    def set_quiz_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory path for quiz files.

        Args:
            directory: Path to quiz files directory

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(directory, str):
            return self._failure(
                f"Quiz directory must be a string, got {type(directory).__name__}",
                f"❌ Invalid input: Expected a path string, got {type(directory).__name__}"
            )

        if not directory.strip():
            return self._failure("Quiz directory cannot be empty", "❌ Directory path cannot be empty")

        try:
            Path(directory).resolve()
        except (OSError, ValueError) as e:
            return self._failure(f"Invalid directory path format: {e}", f"❌ Invalid path format: {directory}")

        self._quiz_directory = directory
        return self._success(f"Quiz directory set to {directory}")

    def get_quiz_directory(self) -> str:
        return self._quiz_directory

    def set_results_file(self, results_file: Optional[str]) -> Dict[str, Any]:
        """
        Set the JSON file quiz results are appended to.

        Args:
            results_file: Path of the results file, or None to keep results in memory
        """
        if results_file is None:
            self._results_file = None
            return self._success("Quiz results will be kept in memory")

        if not isinstance(results_file, str) or not results_file.strip():
            return self._failure(
                f"Results file must be a non-empty string or null, got {results_file!r}",
                "❌ Results file must be a file path"
            )

        if Path(results_file).suffix != ".json":
            return self._failure(
                f"Results file must be a .json file: {results_file}",
                "❌ Results file must end in .json"
            )

        self._results_file = results_file
        return self._success(f"Results file set to {results_file}")

    def get_results_file(self) -> Optional[str]:
        return self._results_file

    def set_tick_interval(self, interval: float) -> Dict[str, Any]:
        """
        Set the number of seconds between countdown ticks.

        Args:
            interval: Seconds per tick; each tick removes one second of quiz time
        """
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            return self._failure(
                f"Tick interval must be a number, got {type(interval).__name__}",
                f"❌ Invalid input: Expected a number, got {type(interval).__name__}"
            )

        if not self.MIN_TICK_INTERVAL <= interval <= self.MAX_TICK_INTERVAL:
            return self._failure(
                f"Tick interval must be between {self.MIN_TICK_INTERVAL} and {self.MAX_TICK_INTERVAL} seconds",
                f"❌ Tick interval must be between {self.MIN_TICK_INTERVAL} and {self.MAX_TICK_INTERVAL} seconds"
            )

        self._tick_interval = float(interval)
        return self._success(f"Tick interval set to {interval} seconds")

    def get_tick_interval(self) -> float:
        return self._tick_interval

    def set_jwt_secret(self, secret: str) -> Dict[str, Any]:
        if not isinstance(secret, str) or not secret:
            return self._failure("JWT secret must be a non-empty string", "❌ Token secret cannot be empty")
        self._jwt_secret = secret
        self.logger.info("JWT secret updated")
        return {
            'success': True,
            'message': "JWT secret updated",
            'user_message': "✅ Token secret updated"
        }

    def get_jwt_secret(self) -> str:
        return self._jwt_secret

    def set_jwt_algorithm(self, algorithm: str) -> Dict[str, Any]:
        if algorithm not in self.SUPPORTED_JWT_ALGORITHMS:
            return self._failure(
                f"Unsupported JWT algorithm: {algorithm}",
                f"❌ Token algorithm must be one of {', '.join(self.SUPPORTED_JWT_ALGORITHMS)}"
            )
        self._jwt_algorithm = algorithm
        return self._success(f"JWT algorithm set to {algorithm}")

    def get_jwt_algorithm(self) -> str:
        return self._jwt_algorithm

    def set_token_expire_days(self, days: int) -> Dict[str, Any]:
        if isinstance(days, bool) or not isinstance(days, int):
            return self._failure(
                f"Token expiry must be an integer, got {type(days).__name__}",
                f"❌ Invalid input: Expected a number, got {type(days).__name__}"
            )
        if not self.MIN_TOKEN_EXPIRE_DAYS <= days <= self.MAX_TOKEN_EXPIRE_DAYS:
            return self._failure(
                f"Token expiry must be between {self.MIN_TOKEN_EXPIRE_DAYS} and {self.MAX_TOKEN_EXPIRE_DAYS} days",
                f"❌ Token expiry must be between {self.MIN_TOKEN_EXPIRE_DAYS} and {self.MAX_TOKEN_EXPIRE_DAYS} days"
            )
        self._token_expire_days = days
        return self._success(f"Token expiry set to {days} days")

    def get_token_expire_days(self) -> int:
        return self._token_expire_days

    def set_api_address(self, host: str, port: int) -> Dict[str, Any]:
        """
        Set the address the HTTP API binds to.

        Args:
            host: Interface to listen on
            port: TCP port
        """
        if not isinstance(host, str) or not host.strip():
            return self._failure("API host must be a non-empty string", "❌ API host cannot be empty")
        if isinstance(port, bool) or not isinstance(port, int) or not self.MIN_API_PORT <= port <= self.MAX_API_PORT:
            return self._failure(
                f"API port must be an integer between {self.MIN_API_PORT} and {self.MAX_API_PORT}, got {port!r}",
                f"❌ API port must be between {self.MIN_API_PORT} and {self.MAX_API_PORT}"
            )
        self._api_host = host
        self._api_port = port
        return self._success(f"API address set to {host}:{port}")

    def get_api_host(self) -> str:
        return self._api_host

    def get_api_port(self) -> int:
        return self._api_port

    def apply_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply settings from a loaded config.json, then environment overrides.

        Reads the 'quiz' section (quiz_directory, results_file, tick_interval) and
        the 'api' section (host, port, jwt_secret, jwt_algorithm, token_expire_days).
        JWT_SECRET in the environment takes precedence over the file.

        Returns:
            Dictionary with overall success and the error messages of rejected settings
        """
        quiz_config = config.get('quiz', {})
        api_config = config.get('api', {})
        results: List[Dict[str, Any]] = []

        if 'quiz_directory' in quiz_config:
            results.append(self.set_quiz_directory(quiz_config['quiz_directory']))
        if 'results_file' in quiz_config:
            results.append(self.set_results_file(quiz_config['results_file']))
        if 'tick_interval' in quiz_config:
            results.append(self.set_tick_interval(quiz_config['tick_interval']))

        if 'host' in api_config or 'port' in api_config:
            results.append(self.set_api_address(
                api_config.get('host', self._api_host),
                api_config.get('port', self._api_port)
            ))
        if 'jwt_algorithm' in api_config:
            results.append(self.set_jwt_algorithm(api_config['jwt_algorithm']))
        if 'token_expire_days' in api_config:
            results.append(self.set_token_expire_days(api_config['token_expire_days']))

        secret = os.getenv('JWT_SECRET') or api_config.get('jwt_secret')
        if secret:
            results.append(self.set_jwt_secret(secret))

        errors = [r['error'] for r in results if not r['success']]
        if errors:
            self.logger.warning(f"Ignored {len(errors)} invalid configuration values")
        return {
            'success': not errors,
            'errors': errors
        }

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        if not isinstance(self._quiz_directory, str) or not self._quiz_directory.strip():
            validation_result["issues"].append(f"Invalid quiz directory: {self._quiz_directory}")

        if not self.MIN_TICK_INTERVAL <= self._tick_interval <= self.MAX_TICK_INTERVAL:
            validation_result["issues"].append(f"Invalid tick interval: {self._tick_interval}")

        if not self.MIN_TOKEN_EXPIRE_DAYS <= self._token_expire_days <= self.MAX_TOKEN_EXPIRE_DAYS:
            validation_result["issues"].append(f"Invalid token expiry: {self._token_expire_days}")

        if self._jwt_algorithm not in self.SUPPORTED_JWT_ALGORITHMS:
            validation_result["issues"].append(f"Invalid JWT algorithm: {self._jwt_algorithm}")

        if not self.MIN_API_PORT <= self._api_port <= self.MAX_API_PORT:
            validation_result["issues"].append(f"Invalid API port: {self._api_port}")

        validation_result["valid"] = not validation_result["issues"]
        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        results_str = self._results_file if self._results_file else "in memory"
        secret_str = "default (change it!)" if self._jwt_secret == self.DEFAULT_JWT_SECRET else "custom"
        return (
            f"GrammarMaster Settings:\n"
            f"• Quiz Directory: {self._quiz_directory}\n"
            f"• Results: {results_str}\n"
            f"• Tick Interval: {self._tick_interval} seconds\n"
            f"• Token: {self._jwt_algorithm}, expires after {self._token_expire_days} days, secret {secret_str}\n"
            f"• API: {self._api_host}:{self._api_port}"
        )

    def get_configuration_health_check(self) -> Dict[str, Any]:
        """
        Check the configuration for problems worth reporting at startup.

        Returns:
            Dictionary with health status, warnings, errors and recommendations
        """
        health_check = {
            'healthy': True,
            'warnings': [],
            'errors': [],
            'recommendations': []
        }

        for issue in self.validate_settings()['issues']:
            health_check['healthy'] = False
            health_check['errors'].append(f"❌ {issue}")

        quiz_dir = Path(self._quiz_directory)
        if not quiz_dir.exists():
            health_check['warnings'].append(f"⚠️ Quiz directory does not exist: {self._quiz_directory}")
            health_check['recommendations'].append(
                "The directory will be created and seeded with sample quizzes on first load."
            )
        elif not os.access(quiz_dir, os.R_OK):
            health_check['healthy'] = False
            health_check['errors'].append(f"❌ Cannot read quiz directory: {self._quiz_directory}")
            health_check['recommendations'].append("Check file permissions for the quiz directory.")

        if self._jwt_secret == self.DEFAULT_JWT_SECRET:
            health_check['warnings'].append("⚠️ Using the default JWT secret")
            health_check['recommendations'].append("Set JWT_SECRET before exposing the API.")

        if self._results_file is None:
            health_check['warnings'].append("⚠️ Quiz results are kept in memory and lost on restart")

        return health_check
