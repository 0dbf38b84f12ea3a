"""dnsacme tests"""
