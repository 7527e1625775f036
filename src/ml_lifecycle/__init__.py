"""End-to-end lifecycle harness for a remote machine-learning service.

Drives dataset upload, project creation, analysis configuration, model
training, prediction and teardown against the service's REST API, and
reports a passed/failed/skipped outcome for every stage.
"""

__version__ = "0.1.0"
