"""Package metadata."""
__version__ = "1.0.0"
__desc__ = "SAML Broker - AWS credentials from your identity provider"
