"""ACME protocol client validating domains through ``dns-01`` challenges.

This package implements the client side of the `ACME protocol`_ as spoken
by the original Let's Encrypt endpoints (``new-reg``, ``new-authz``,
``new-cert`` resources): directory discovery, anti-replay nonces, signed
requests, authorization polling and certificate issuance.

.. _`ACME protocol`: https://ietf-wg-acme.github.io/acme

"""
__version__ = '0.4.0'
