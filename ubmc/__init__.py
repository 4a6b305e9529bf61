"""Physical memory access for ASPEED BMC SoCs and the services a BMC runs."""

__version__ = "0.1.0"