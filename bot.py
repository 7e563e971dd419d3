#!/usr/bin/env python3
"""
WhatsApp Group Bot - Entry Point

Webhook receiver for a WAHA (WhatsApp HTTP API) session.
The actual implementation is in the wagroupbot package.
"""

if __name__ == "__main__":
    from wagroupbot import main
    main()
