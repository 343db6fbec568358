"""
Cluster Errors Module
"""


class ClusterLookupError(Exception):
    """A cluster resource could not be read (anything other than "not found")."""

    def __init__(self, message: str, kind: str = "", name: str = ""):
        super().__init__(message)
        self.kind = kind
        self.name = name
