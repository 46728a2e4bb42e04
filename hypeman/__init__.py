"""Client library for the hypeman API: request options, host resources, volumes and file copy to and from instances."""

__version__ = "0.9.0"