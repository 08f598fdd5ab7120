from cmtgen.exceptions import (
    CancelledError,
    CmtGenError,
    ConfigError,
    LLMError,
    MalformedResponseError,
    MissingCredentialError,
    ProviderNotFoundError,
    TransportError,
    ValidationError,
)


def test_exceptions_hierarchy_and_str():
    # Given exception classes
    # When instantiating
    c = ConfigError("cfg")
    v = ValidationError("val")
    llm_err = LLMError("llm")

    # Then hierarchy holds
    for exc in (c, v, llm_err):
        assert isinstance(exc, CmtGenError)
    for cls in (
        ProviderNotFoundError,
        MissingCredentialError,
        TransportError,
        CancelledError,
        MalformedResponseError,
    ):
        assert issubclass(cls, LLMError)
    # And messages are retained
    assert "cfg" in str(c)
    assert "val" in str(v)


def test_provider_not_found_lists_known_providers():
    err = ProviderNotFoundError("nope", ["anthropic", "openai"])
    assert err.name == "nope"
    assert err.known == ("anthropic", "openai")
    assert "anthropic, openai" in str(err)
    assert "none registered" in str(ProviderNotFoundError("x"))


def test_missing_credential_names_env_var():
    err = MissingCredentialError("xai")
    assert err.env_var == "XAI_API_KEY"
    assert "XAI_API_KEY" in str(err)
    assert MissingCredentialError("openai", "MY_KEY").env_var == "MY_KEY"


def test_transport_error_keeps_status_and_cancel_reason():
    assert TransportError("boom", 503).status_code == 503
    assert TransportError("boom").status_code is None
    assert CancelledError().reason == "operation cancelled"
    assert str(CancelledError("deadline exceeded")) == "deadline exceeded"
