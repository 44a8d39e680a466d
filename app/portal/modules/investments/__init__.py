"""
Investment tiers, commission and dividend arithmetic, and investor
registration (investors + investments tables).
"""
