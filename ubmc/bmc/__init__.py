"""BMC services: GPIO lines and buttons, fans, UART console, DNS challenges and RDNSS."""