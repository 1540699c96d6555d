"""Governance scoring and violation rules"""
