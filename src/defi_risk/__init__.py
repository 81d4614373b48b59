"""Client for a confidential DeFi risk analyzer contract.

Encrypts portfolio inputs for an FHEVM-backed DeFiRiskAnalyzer contract,
submits them for analysis, and decrypts the encrypted results for the user.
"""

__version__ = "0.1.0"
