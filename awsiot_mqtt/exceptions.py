"""
Custom exceptions for the AWS IoT MQTT bindings.
"""


class IotClientError(Exception):
    """Base exception for all AWS IoT MQTT binding errors."""
    pass


class ConfigError(IotClientError):
    """Exception raised for unsupported or incomplete client configuration."""
    pass


class CredentialError(IotClientError):
    """Exception raised when a keystore cannot be read or decrypted."""
    pass


class IotConnectionError(IotClientError):
    """Exception raised when the broker refuses or never acknowledges a connection."""
    pass


class PublishError(IotClientError):
    """Exception raised when a publish is rejected by the MQTT client."""
    pass


class PublishTimeoutError(PublishError):
    """Exception raised when a blocking publish is not acknowledged in time."""
    pass


class SubscribeError(IotClientError):
    """Exception raised when a subscribe or unsubscribe request is rejected."""
    pass
