"""
Orchestrator for protected inscription purchases.

PreInscriberWithProtection builds the three PSBTs of a purchase:

1. Funding: splits buyer UTXOs into one exact-value output per inscription
   plus a CPFP output, all paid to the buyer's commitment address
2. Purchase (one per inscription): the seller's signed PSBT plus the buyer's
   funding input; sends the inscription to its escrow address
3. Withdraw: moves every inscription from escrow to the buyer and spends the
   CPFP output, paying for the whole chain

Transactions 1 and 2 pay a low base fee rate; the CPFP funding is iterated
until the chain as a whole pays the requested effective fee rate.
"""

import logging
from typing import List, Optional, Union

from embit.psbt import PSBT
from embit.script import Script

from .core.address import (
    address_to_script, get_buyer_commitment_address, get_escrow_address, script_to_address
)
from .core.constants import (
    BASE_FEE_RATE, INITIAL_CPFP_FUNDING, DUMMY_INPUT_VALUE, MAX_FEE_ITERATIONS,
    SUPPORTED_BUYER_ADDRESS_TYPES
)
from .core.errors import (
    PreInscriberError, InputError, UnsupportedAddressType, NoSpendableUtxos,
    InscriptionNotFound, InscriptionOwnershipMismatch, FeeConvergenceTimeout
)
from .core.models import (
    UTXO, TxOutput, SerializedPSBT, CommitmentPayment, EscrowAddress, BuildSession,
    BuildTransactionsResponse
)
from .core import transaction_builder as builder
from .backend.datasource import BaseDatasource
from .backend.validator import InscriptionValidator
from .utils import format_btc, format_fee_rate, parse_outpoint
from .events import (
    EventBus, Event, EventType,
    create_validation_complete_event, create_utxos_fetched_event,
    create_fee_iteration_event, create_tx_build_error_event
)

logger = logging.getLogger('preinscribe.app')


class PreInscriberWithProtection:
    """
    Builds a sniping-protected purchase of one or more inscriptions.

    Coordinates:
    - InscriptionValidator for the seller PSBTs
    - Datasource for buyer UTXOs
    - transaction_builder for the three PSBTs
    - EventBus for progress reporting
    """

    def __init__(
        self,
        datasource: BaseDatasource,
        escrow_public_key: str,
        inscription_psbts: List[str],
        buyer_address: str,
        buyer_public_key: str,
        receive_address: str,
        effective_fee_rate: float,
        extra_outputs: Optional[List[TxOutput]] = None,
        network: str = 'mainnet',
        chain: str = 'bitcoin',
        event_bus: Optional[EventBus] = None,
        base_fee_rate: float = BASE_FEE_RATE,
        max_iterations: int = MAX_FEE_ITERATIONS
    ):
        """
        Initialize the purchase builder.

        Args:
            datasource: UTXO / inscription lookups
            escrow_public_key: Escrow public key hex
            inscription_psbts: Seller-signed inscription PSBTs (base64 or hex)
            buyer_address: Address funding the purchase (receives change)
            buyer_public_key: Public key of buyer_address
            receive_address: Address receiving the inscriptions
            effective_fee_rate: Fee rate (sat/vB) the whole chain must pay
            extra_outputs: Outputs appended to the withdraw transaction
            network: Network name (mainnet, testnet, signet, regtest)
            chain: Chain name (bitcoin, fractal-bitcoin)
            event_bus: Event bus for progress events (a private one if None)
            base_fee_rate: Fee rate of transactions 1 and 2
            max_iterations: Fee-convergence iteration bound
        """
        self.datasource = datasource
        self.escrow_public_key = escrow_public_key
        self.inscription_psbts = list(inscription_psbts or [])
        self.buyer_address = buyer_address
        self.buyer_public_key = buyer_public_key
        self.receive_address = receive_address
        self.effective_fee_rate = effective_fee_rate
        self.extra_outputs = list(extra_outputs or [])
        self.network = network
        self.chain = chain
        self.event_bus = event_bus or EventBus()
        self.base_fee_rate = base_fee_rate
        self.max_iterations = max_iterations

        self.validator = InscriptionValidator(datasource, network, chain)

    def _check_buyer_address(self) -> None:
        # Decode and network errors propagate unchanged
        address_type = address_to_script(self.buyer_address, self.network, self.chain).script_type()
        if address_type not in SUPPORTED_BUYER_ADDRESS_TYPES:
            raise UnsupportedAddressType(
                f"Buyer address {self.buyer_address} must be a segwit/taproot address"
            )

    async def get_buyer_utxos(self) -> List[UTXO]:
        """
        Fetch the buyer's spendable UTXOs (common / uncommon sats only).

        Returns:
            Spendable UTXOs, largest first

        Raises:
            NoSpendableUtxos: If the buyer has none
        """
        unspents = await self.datasource.get_unspents(
            self.buyer_address,
            rarity=self.datasource.default_rarity(),
            type='spendable',
            sort='desc'
        )
        utxos = unspents.spendable_utxos
        if not utxos:
            raise NoSpendableUtxos(f"No spendable UTXOs for {self.buyer_address}")

        total = sum(u.value for u in utxos)
        logger.info(f"Fetched {len(utxos)} spendable UTXO(s) worth {format_btc(total)}")
        await self.event_bus.emit(create_utxos_fetched_event(self.buyer_address, len(utxos), total))
        return utxos

    async def build_transactions(self, unique_id: str) -> BuildTransactionsResponse:
        """
        Build the three PSBTs of the purchase.

        Args:
            unique_id: Trade identifier; the same id always yields the same
                buyer commitment address

        Returns:
            BuildTransactionsResponse with all PSBTs ready for signing

        Raises:
            InputError: If no seller PSBTs were given or the buyer address is unsupported
            ValidationError: If a seller PSBT fails validation
            ResourceError: If the buyer cannot fund the chain
            FeeConvergenceTimeout: If the CPFP funding does not converge
        """
        try:
            return await self._build_transactions(unique_id)
        except PreInscriberError as e:
            logger.error(f"Failed to build transactions: {e}")
            await self.event_bus.emit(create_tx_build_error_event(e))
            raise

    async def _build_transactions(self, unique_id: str) -> BuildTransactionsResponse:
        if not self.inscription_psbts:
            raise InputError("Inscription PSBTs are required")
        if not unique_id:
            raise InputError("unique_id is required")
        if self.effective_fee_rate <= 0:
            raise InputError(f"Effective fee rate must be positive, got {self.effective_fee_rate}")

        self._check_buyer_address()

        seller_psbts = [builder.decode_psbt(p) for p in self.inscription_psbts]

        await self.event_bus.emit(Event(
            EventType.VALIDATION_STARTED, {'count': len(seller_psbts)}, source='validator'
        ))
        inscriptions = await self.validator.validate(seller_psbts)
        await self.event_bus.emit(create_validation_complete_event([i.id for i in inscriptions]))

        session = BuildSession(buyer_utxos=await self.get_buyer_utxos())
        commitment = get_buyer_commitment_address(
            self.buyer_public_key, self.buyer_address, unique_id, self.network, self.chain
        )

        await self.event_bus.emit(Event(
            EventType.TX_BUILD_STARTED,
            {'inscriptions': len(seller_psbts), 'effective_fee_rate': self.effective_fee_rate},
            source='builder'
        ))

        cpfp_funding = INITIAL_CPFP_FUNDING
        while True:
            if session.iterations >= self.max_iterations:
                raise FeeConvergenceTimeout(
                    f"CPFP funding did not converge within {self.max_iterations} iterations "
                    f"(last funding {cpfp_funding:,} sats)"
                )
            session.iterations += 1
            session.cpfp_funding = cpfp_funding

            first, seconds, third = self._build_chain(session, commitment, seller_psbts)

            total_vbytes = (
                builder.get_vbytes(first)
                + sum(builder.get_vbytes(p) for p in seconds)
                + builder.get_vbytes(third)
            )
            desired_total_fee = self.effective_fee_rate * total_vbytes
            paid_before_third = builder.get_total_fees(first) + sum(builder.get_total_fees(p) for p in seconds)
            total_fee = paid_before_third + builder.get_total_fees(third)

            # Fee rate the withdraw transaction must pay to lift the whole chain.
            # Never negative: the CPFP input must still cover the extra outputs.
            cpfp_fee_rate = max(
                (desired_total_fee - paid_before_third) / builder.get_vbytes(third), 0
            )
            extra_funding = builder.calculate_funding_amount(third, cpfp_fee_rate)

            logger.debug(
                f"Iteration {session.iterations}: cpfp {cpfp_funding:,} sats, "
                f"{total_vbytes:.1f} vB, paid {total_fee:,} / {desired_total_fee:.1f} sats, "
                f"extra {extra_funding:,} sats"
            )
            await self.event_bus.emit(create_fee_iteration_event(
                session.iterations, cpfp_funding, total_vbytes, total_fee, extra_funding
            ))

            if extra_funding <= 0:
                break
            cpfp_funding += extra_funding

        response = self._make_response(session, first, seconds, third, total_vbytes, total_fee)
        logger.info(
            f"Converged after {session.iterations} iteration(s): CPFP funding {cpfp_funding:,} sats, "
            f"{format_fee_rate(total_fee, total_vbytes)} sat/vB effective"
        )
        await self.event_bus.emit(Event(EventType.TX_BUILD_COMPLETE, response.to_dict(), source='builder'))
        return response

    def _build_chain(self, session: BuildSession, commitment: CommitmentPayment, seller_psbts: List[PSBT]):
        """Rebuild transactions 1, 2 and 3 for the session's current CPFP funding."""
        commitment_address = commitment.address

        outputs = []
        for seller_psbt in seller_psbts:
            sizing = builder.with_dummy_commitment_input(seller_psbt, commitment)
            funding = builder.calculate_funding_amount(sizing, self.base_fee_rate)
            outputs.append(TxOutput(commitment_address, funding + DUMMY_INPUT_VALUE))
        outputs.append(TxOutput(commitment_address, session.cpfp_funding))
        cpfp_index = len(outputs) - 1

        first = builder.build_first_transaction(
            session, outputs, self.buyer_address, self.buyer_public_key,
            self.base_fee_rate, self.network, self.chain
        )

        seconds = [
            builder.build_second_transaction(
                session, first, index, seller_psbt, self.buyer_public_key, commitment
            )
            for index, seller_psbt in enumerate(seller_psbts)
        ]

        third = builder.build_withdraw_transaction(
            session, first, cpfp_index, seconds, self.receive_address,
            self.escrow_public_key, self.buyer_public_key, commitment, self.extra_outputs,
            self.network, self.chain
        )
        return first, seconds, third

    def _make_response(
        self,
        session: BuildSession,
        first: PSBT,
        seconds: List[PSBT],
        third: PSBT,
        total_vbytes: float,
        total_fee: int
    ) -> BuildTransactionsResponse:
        first_ser = builder.serialize_psbt(first)
        seconds_ser = [builder.serialize_psbt(p) for p in seconds]
        third_ser = builder.serialize_psbt(third)
        escrow_count = len(seconds)

        signing_plan = {
            'buyer': {
                'first': list(range(len(first.inputs))),
                'second': [[len(p.inputs) - 1] for p in seconds],
                'third': [len(third.inputs) - 1],
            },
            'seller': {
                'second': [[0] for _ in seconds],
            },
            'escrow': {
                'third': list(range(escrow_count)),
            },
        }

        return BuildTransactionsResponse(
            first_transaction_psbt_base64=first_ser.base64,
            second_transaction_psbt_base64s=[s.base64 for s in seconds_ser],
            third_transaction_psbt_base64=third_ser.base64,
            cpfp_funding=session.cpfp_funding,
            iterations=session.iterations,
            total_vbytes=total_vbytes,
            total_fee=total_fee,
            signing_plan=signing_plan,
            first_transaction_psbt_hex=first_ser.hex,
            second_transaction_psbt_hexes=[s.hex for s in seconds_ser],
            third_transaction_psbt_hex=third_ser.hex
        )

    @staticmethod
    def get_escrow_address(
        inscription_outpoint: str,
        escrow_public_key: str,
        network: str = 'mainnet',
        chain: str = 'bitcoin'
    ) -> EscrowAddress:
        """
        Escrow address an inscription at `inscription_outpoint` is sold through.

        Raises:
            InputError: If the outpoint or key is malformed
        """
        parse_outpoint(inscription_outpoint)
        return get_escrow_address(inscription_outpoint, escrow_public_key, network, chain)

    @staticmethod
    def calculate_funding_amount(psbt: Union[str, PSBT], fee_rate: float) -> int:
        """
        Satoshis missing from a PSBT's inputs to pay its outputs at fee_rate.

        Args:
            psbt: PSBT object, or PSBT in base64 / hex
            fee_rate: Fee rate in sat/vB
        """
        if isinstance(psbt, str):
            psbt = builder.decode_psbt(psbt)
        return builder.calculate_funding_amount(psbt, fee_rate)

    @staticmethod
    async def create_inscription_psbt(
        datasource: BaseDatasource,
        inscription_id: str,
        seller_public_key: str,
        seller_address: str,
        receive_payment_address: str,
        price: int,
        escrow_public_key: str,
        network: str = 'mainnet',
        chain: str = 'bitcoin'
    ) -> SerializedPSBT:
        """
        Build the seller's inscription PSBT for a sale through escrow.

        The seller signs its single input with SIGHASH_ALL|ANYONECANPAY so the
        buyer can later add a funding input.

        Args:
            datasource: Inscription lookups
            inscription_id: Inscription being sold
            seller_public_key: Seller public key hex
            seller_address: Address currently holding the inscription
            receive_payment_address: Address receiving the price
            price: Price in satoshis
            escrow_public_key: Escrow public key hex
            network: Network name
            chain: Chain name

        Returns:
            SerializedPSBT

        Raises:
            InscriptionNotFound: If the inscription has no known UTXO
            InscriptionOwnershipMismatch: If the UTXO is not held by seller_address
        """
        utxo = await datasource.get_inscription_utxo(inscription_id)
        if utxo is None:
            raise InscriptionNotFound(f"Inscription {inscription_id} not found")

        owner = utxo.address or script_to_address(
            Script(bytes.fromhex(utxo.script_pubkey)), network, chain
        )
        if owner != seller_address:
            raise InscriptionOwnershipMismatch(
                f"Inscription {inscription_id} does not belong to {seller_address}"
            )

        psbt = builder.build_inscription_psbt(
            utxo, seller_public_key, receive_payment_address, price,
            escrow_public_key, network, chain
        )
        logger.info(f"Created inscription PSBT for {inscription_id}")
        return builder.serialize_psbt(psbt)
