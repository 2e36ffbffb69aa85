"""RMV stainless-steel fabrication workflow service"""
