from .reader import ContractReader

__all__ = ["ContractReader"]
