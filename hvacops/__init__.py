"""HVACOps: thermostat enforcement and alerting for multi-site retail HVAC."""

__version__ = "0.1.0"
