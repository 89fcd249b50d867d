from tokenledger.custody.wallets import ActiveWalletRef, InMemoryWalletCustody, Wallet, WalletCustody

__all__ = ["ActiveWalletRef", "InMemoryWalletCustody", "Wallet", "WalletCustody"]
