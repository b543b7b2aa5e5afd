"""
Data Models Layer.

Value containers used to build requests, the JSON helper used to read
responses, and the validated client configuration.
"""

from .config import ClientConfig
from .jsondict import JSONDict
from .values import Cookies, File, Files, Form, Headers, Params, Values

__all__ = [
    "ClientConfig",
    "Cookies",
    "File",
    "Files",
    "Form",
    "Headers",
    "JSONDict",
    "Params",
    "Values",
]
