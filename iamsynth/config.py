"""
Settings for policy synthesis.

Read from the `iamsynth` Pulumi config namespace, falling back to
IAMSYNTH_* environment variables.
"""
import os

import pulumi

__all__ = 'get_setting', 'minimize_policies', 'stack_reference_prefix'

_TRUTHY = {'1', 'true', 'yes', 'on'}


def get_setting(key, default=None):
    value = pulumi.Config('iamsynth').get(key)
    if value is None:
        envname = 'IAMSYNTH_' + ''.join(
            f"_{c}" if c.isupper() else c.upper() for c in key
        )
        value = os.environ.get(envname)
    if value is None:
        return default
    return value


def minimize_policies():
    """
    Whether documents created by binders merge compatible statements.
    """
    value = get_setting('minimizePolicies')
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


def stack_reference_prefix():
    """
    Prefix for StackReference names, "<org>/<project>/" unless configured.
    """
    prefix = get_setting('stackReferencePrefix')
    if prefix is None:
        prefix = f"{pulumi.get_organization()}/{pulumi.get_project()}/"
    return prefix
