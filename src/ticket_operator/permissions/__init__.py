from .models import PermissionSet, ProviderCliArgs, StepPermissions, ToolPattern

__all__ = ["PermissionSet", "ProviderCliArgs", "StepPermissions", "ToolPattern"]
