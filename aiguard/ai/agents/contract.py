import json
import re
from typing import Any

from aiguard.ai.agents.base import BaseAgent
from aiguard.ai.client import ChatOptions, validate_and_sanitize_input
from aiguard.services.errors import (
    AIError,
    AuthenticationError,
    InvalidGenerationError,
    ResponseParsingError,
    ValidationError,
)
from aiguard.services.logger import generate_correlation_id

CONTRACT_SYSTEM_PROMPT = """You are an expert Solidity developer specializing in creating secure,
gas-efficient smart contracts. Generate production-ready Solidity code that follows best practices
and security standards. Include detailed comments explaining the code.

IMPORTANT: When discussing deployment in comments or documentation, always refer to using this application's
built-in deployment capabilities. Never suggest external tools like Remix IDE or other deployment methods."""

PARAMETERS_SYSTEM_PROMPT = """You are an AI assistant specialized in blockchain development.
Extract and generate appropriate parameters for smart contract deployment based on user input.
Respond with a valid JSON object containing parameter key-value pairs.

IMPORTANT: When providing any explanations or suggestions about deployment,
always refer to using this application's built-in deployment capabilities.
Never suggest external tools like Remix IDE or other deployment methods."""

_FENCED_JSON = re.compile(r"```json\n([\s\S]*?)\n```")
_BARE_OBJECT = re.compile(r"\{[\s\S]*\}")
_SOLIDITY_DECLARATION = re.compile(r"\b(?:contract|library|interface)\s+[A-Za-z_]\w*")


def extract_json_object(text: str) -> dict[str, Any]:
    """Pull a JSON object out of a model reply (fenced block, bare object, or whole text)."""
    match = _FENCED_JSON.search(text)
    if match:
        candidate = match.group(1)
    else:
        match = _BARE_OBJECT.search(text)
        candidate = match.group(0) if match else text

    parsed = json.loads(candidate)
    if not isinstance(parsed, dict):
        raise ValueError("Expected a JSON object")
    return parsed


class ContractAgent(BaseAgent):
    """Generates Solidity contracts and deployment parameters from user input."""

    async def generate_smart_contract(
        self, contract_type: str, parameters: dict[str, Any]
    ) -> str:
        """Generate contract source code.

        Args:
            contract_type: e.g. "erc20", "erc20-tax"
            parameters: Contract parameters listed in the prompt

        Returns:
            Solidity source as returned by the model

        Raises:
            AIError: Any taxonomy error from validation or the API call
        """
        correlation_id = generate_correlation_id()
        log = self.client.logger.with_correlation_id(correlation_id)

        log.info(
            "Generating smart contract",
            {"contract_type": contract_type, "parameter_count": len(parameters or {})},
        )

        if not self.client.settings.api_key_available:
            log.error(
                "Cannot generate smart contract: DeepSeek API key is not configured",
                {"contract_type": contract_type},
            )
            raise AuthenticationError(
                "DeepSeek API key is not configured. "
                "Please set the DEEPSEEK_API_KEY environment variable.",
                correlation_id=correlation_id,
            )

        try:
            if not isinstance(parameters, dict):
                raise ValidationError(
                    "Parameters must be a valid object", correlation_id=correlation_id
                )
            contract_type = validate_and_sanitize_input(
                contract_type, correlation_id, self.client.logger
            )

            prompt = self._build_contract_prompt(contract_type, parameters)
            log.debug(
                "Contract generation prompt prepared",
                {"prompt_length": len(prompt), "contract_type": contract_type},
            )

            code = await self.client.complete(
                prompt,
                CONTRACT_SYSTEM_PROMPT,
                ChatOptions(temperature=0.2, max_tokens=4000, timeout_ms=60000),
                correlation_id,
                validate=lambda code: self._check_contract_code(code, correlation_id),
            )
        except AIError as e:
            log.error(
                f"Contract generation failed: {e.message}",
                {"contract_type": contract_type, "error_type": e.name},
                e,
            )
            raise

        log.info(
            "Smart contract generated successfully",
            {"code_length": len(code), "contract_type": contract_type},
        )
        return code

    async def generate_deployment_parameters(
        self, contract_type: str, user_input: str
    ) -> dict[str, Any]:
        """Extract deployment parameters; unparsable replies yield {}."""
        correlation_id = generate_correlation_id()
        log = self.client.logger.with_correlation_id(correlation_id)

        log.info(
            "Generating deployment parameters",
            {"contract_type": contract_type, "user_input_length": len(user_input or "")},
        )

        if not self.client.settings.api_key_available:
            log.error(
                "Cannot generate deployment parameters: DeepSeek API key is not configured",
                {"contract_type": contract_type},
            )
            return {}

        try:
            contract_type = validate_and_sanitize_input(
                contract_type, correlation_id, self.client.logger
            )
            user_input = validate_and_sanitize_input(
                user_input, correlation_id, self.client.logger
            )

            prompt = (
                f"Based on the following user input for a {contract_type} contract, "
                "extract or suggest appropriate deployment parameters. If any critical "
                "parameters are missing, provide reasonable default values. "
                f'User input: "{user_input}"'
            )
            reply = await self.client.complete(
                prompt,
                PARAMETERS_SYSTEM_PROMPT,
                ChatOptions(temperature=0.3, timeout_ms=30000),
                correlation_id,
            )
            parameters = self._parse_parameters(reply, correlation_id)
        except ResponseParsingError as e:
            log.warn(
                "Returning empty parameters object as fallback",
                {"contract_type": contract_type},
                e,
            )
            return {}
        except AIError as e:
            log.error(
                f"Parameter generation failed: {e.message}",
                {"contract_type": contract_type, "error_type": e.name},
                e,
            )
            raise

        log.info(
            "Successfully extracted deployment parameters",
            {"parameter_count": len(parameters)},
        )
        return parameters

    def _build_contract_prompt(
        self, contract_type: str, parameters: dict[str, Any]
    ) -> str:
        prompt = (
            f"Generate a complete Solidity smart contract for a {contract_type} "
            "with the following parameters:\n\n"
        )
        for name, value in parameters.items():
            prompt += f"- {name}: {value}\n"

        lowered = contract_type.lower()
        if "erc20" in lowered:
            prompt += """
The contract should be ERC20 compliant and include:
- Safe math operations
- Access control for admin functions
- Events for important state changes
- Use OpenZeppelin contracts where appropriate
- Include proper documentation with NatSpec format"""

            if "tax" in lowered:
                prompt += """
Additionally, include:
- Buy and sell tax mechanisms
- Functions to update tax rates (with appropriate access control)
- Tax distribution logic for marketing, liquidity, etc."""

        return prompt

    def _check_contract_code(self, code: str, correlation_id: str) -> None:
        """Reject replies that contain no contract, library or interface declaration."""
        if not _SOLIDITY_DECLARATION.search(code):
            raise InvalidGenerationError(
                "Generated content does not contain a Solidity contract",
                code,
                correlation_id=correlation_id,
            )

    def _parse_parameters(self, reply: str, correlation_id: str) -> dict[str, Any]:
        try:
            return extract_json_object(reply)
        except ValueError as e:
            self.client.logger.error(
                "Error parsing AI-generated parameters",
                {"response": reply[:200] + "..."},
                correlation_id,
                e,
            )
            raise ResponseParsingError(
                "Failed to parse deployment parameters from AI response",
                reply,
                correlation_id=correlation_id,
                cause=e,
            ) from e
