"""Exception types for hassInk"""


class HassInkError(Exception):
    """Base class for all hassInk errors"""


class ConfigError(HassInkError, ValueError):
    """Configuration is missing or invalid; fatal at startup"""


class ConversionError(HassInkError):
    """A screenshot could not be post-processed into an artifact"""


class PathTraversalError(HassInkError):
    """A requested file path points outside its allowed root"""
