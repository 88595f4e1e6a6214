"""radmgr: provision and operate a FreeRADIUS server backed by PostgreSQL."""

__version__ = "1.0.0"
