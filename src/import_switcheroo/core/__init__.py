"""
Interception core: load requests, processors, the interceptor and its bootstrap facade.
"""
