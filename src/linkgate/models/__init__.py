"""Linkgate models."""

from linkgate.models.app_setting import AppSetting
from linkgate.models.user import User

__all__ = ["AppSetting", "User"]
