"""flowguard - workflow document validator and diff engine.

Validates node/connection workflow documents against node-type schemas and
applies transactional batches of diff operations to them.
"""

__version__ = "0.1.0"
