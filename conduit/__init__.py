"""
conduit: a queue-driven pipeline that turns S3 object notifications into
transformed objects in an egress bucket.
"""

__version__ = "0.1.0"
