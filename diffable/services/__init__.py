"""Request parsing, monitoring and templating services."""
