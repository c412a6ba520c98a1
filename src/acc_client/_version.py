__version__ = "0.1.0"

SDK_NAME = "acc-client"
SDK_DESCRIPTION = "Python client for the Adobe Campaign Classic SOAP API"
