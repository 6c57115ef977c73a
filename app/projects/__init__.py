"""
Projects application.

Projects are the aggregate a payment settles. Payments write the settlement
outcome onto the project through ProjectService.
"""
