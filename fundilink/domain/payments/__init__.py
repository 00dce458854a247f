"""Payment domain - M-Pesa STK push and callback reconciliation"""
