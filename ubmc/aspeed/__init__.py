"""Physical memory access to ASPEED SoCs, directly or over the LPC bridge."""