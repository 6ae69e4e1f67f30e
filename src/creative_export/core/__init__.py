"""
Core components of the creative export pipeline.

This package contains the building blocks shared by every integration:
- Data models and errors (schemas.py, errors.py)
- Configuration and logging (config.py, logging_config.py)
- Field and asset resolution (helpers/)
- Mapping engines and schema validation (mapping/, schema_validation.py)
- Authentication and HTTP dispatch (integration_auth.py, http_dispatch.py)
"""
