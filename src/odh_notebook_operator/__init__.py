"""Kopf operator and admission webhook for OpenDataHub notebooks."""
