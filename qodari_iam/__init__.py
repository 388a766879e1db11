"""Qodari IAM authorization server"""
