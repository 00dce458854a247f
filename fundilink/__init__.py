"""FundiLink core - booking lifecycle, payment reconciliation and provider bookkeeping"""
