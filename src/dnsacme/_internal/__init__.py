"""Internal implementation of the dnsacme command line client.

.. warning:: This module is not part of the public API.

"""
