"""Data models for docrank."""

from .schemas import *
from .ranking import *
