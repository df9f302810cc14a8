"""demoapp package"""
