"""
Projects Domain

Fabrication projects from draft through design approval, fabrication,
installation and completion.
"""
